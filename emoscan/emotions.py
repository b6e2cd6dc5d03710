"""Emotion labels, scan result values and their display metadata."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

# Fixed label order; also the tie-break order for the dominant emotion.
EMOTION_LABELS: Tuple[str, ...] = ("happy", "sad", "angry", "surprised", "fearful", "disgusted", "neutral")

EXCELLENT = "excellent"
GOOD = "good"
POOR = "poor"

EMOTION_EMOJIS: Mapping[str, str] = {
    "happy": "😊",
    "sad": "😢",
    "angry": "😠",
    "surprised": "😲",
    "fearful": "😨",
    "disgusted": "🤢",
    "neutral": "😐",
}

EMOTION_COLORS: Mapping[str, str] = {
    "happy": "#4ade80",
    "sad": "#60a5fa",
    "angry": "#f87171",
    "surprised": "#fbbf24",
    "fearful": "#a78bfa",
    "disgusted": "#34d399",
    "neutral": "#94a3b8",
}

EMOTION_DESCRIPTIONS: Mapping[str, str] = {
    "happy": "Feeling joyful and positive",
    "sad": "Feeling down or melancholic",
    "angry": "Feeling frustrated or irritated",
    "surprised": "Feeling shocked or amazed",
    "fearful": "Feeling worried or anxious",
    "disgusted": "Feeling repulsed or averse",
    "neutral": "Feeling calm and composed",
}

_GREETINGS: Mapping[str, str] = {
    "happy": "{name}, you're radiating joy! 🌟",
    "sad": "{name}, I'm here for you 💙",
    "angry": "{name}, take a deep breath 🌊",
    "surprised": "Wow {name}, what a surprise! ⚡",
    "fearful": "{name}, you're safe here 🛡️",
    "disgusted": "{name}, something's not right? 🤔",
    "neutral": "{name}, feeling calm 🧘",
}


@dataclass(frozen=True)
class BoundingBox:
    width: float
    height: float

    @property
    def area(self) -> float:
        return max(self.width, 0.0) * max(self.height, 0.0)


@dataclass(frozen=True)
class FaceResult:
    """Single-face output of the inference engine."""

    bounding_box: BoundingBox
    scores: Mapping[str, float]


@dataclass(frozen=True)
class ScanResult:
    """Immutable outcome of one successful scan."""

    emotion: str
    confidence: float
    scores: Mapping[str, float]
    timestamp: datetime
    face_width: int
    face_height: int
    quality: str
    face_ratio: float = field(default=0.0, compare=False)

    @property
    def face_size(self) -> str:
        return f"{self.face_width}x{self.face_height}px"

    def breakdown(self) -> List[Tuple[str, float]]:
        """Scores sorted by descending value, label order breaking ties."""
        return sorted(self.scores.items(), key=lambda item: (-item[1], EMOTION_LABELS.index(item[0])))

    def to_payload(self, user_name: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "emotion": self.emotion,
            "confidence": self.confidence,
            "confidence_percent": round(self.confidence * 100),
            "scores": dict(self.scores),
            "breakdown": [
                {"emotion": label, "score": score, "percent": round(score * 100)}
                for label, score in self.breakdown()
            ],
            "timestamp": self.timestamp.isoformat(),
            "face_size": self.face_size,
            "face_ratio": self.face_ratio,
            "quality": self.quality,
            "emoji": EMOTION_EMOJIS[self.emotion],
            "color": EMOTION_COLORS[self.emotion],
            "description": EMOTION_DESCRIPTIONS[self.emotion],
        }
        if user_name:
            payload["greeting"] = greeting(self.emotion, user_name)
        return payload


def quality_tier(face_ratio: float, *, excellent_ratio: float = 0.15, good_ratio: float = 0.08) -> str:
    """Bucket the face-to-frame area ratio; non-decreasing in the ratio."""
    if face_ratio > excellent_ratio:
        return EXCELLENT
    if face_ratio > good_ratio:
        return GOOD
    return POOR


def face_to_frame_ratio(box: BoundingBox, frame_width: int, frame_height: int) -> float:
    frame_area = frame_width * frame_height
    if frame_area <= 0:
        return 0.0
    return box.area / frame_area


def normalise_scores(scores: Mapping[str, float]) -> Mapping[str, float]:
    """Project raw scores onto the seven labels, missing ones scoring 0."""
    return MappingProxyType({label: float(scores.get(label, 0.0)) for label in EMOTION_LABELS})


def dominant_emotion(scores: Mapping[str, float]) -> Tuple[str, float]:
    best_label = EMOTION_LABELS[0]
    best_score = float(scores.get(best_label, 0.0))
    for label in EMOTION_LABELS[1:]:
        score = float(scores.get(label, 0.0))
        # strict comparison keeps the first maximum
        if score > best_score:
            best_label, best_score = label, score
    return best_label, best_score


def build_scan_result(
    face: FaceResult,
    frame_width: int,
    frame_height: int,
    timestamp: datetime,
    *,
    excellent_ratio: float = 0.15,
    good_ratio: float = 0.08,
) -> ScanResult:
    scores = normalise_scores(face.scores)
    label, confidence = dominant_emotion(scores)
    ratio = face_to_frame_ratio(face.bounding_box, frame_width, frame_height)
    return ScanResult(
        emotion=label,
        confidence=confidence,
        scores=scores,
        timestamp=timestamp,
        face_width=round(face.bounding_box.width),
        face_height=round(face.bounding_box.height),
        quality=quality_tier(ratio, excellent_ratio=excellent_ratio, good_ratio=good_ratio),
        face_ratio=ratio,
    )


def greeting(emotion: str, user_name: str) -> str:
    return _GREETINGS[emotion].format(name=user_name)


__all__ = [
    "EMOTION_LABELS",
    "EMOTION_EMOJIS",
    "EMOTION_COLORS",
    "EMOTION_DESCRIPTIONS",
    "EXCELLENT",
    "GOOD",
    "POOR",
    "BoundingBox",
    "FaceResult",
    "ScanResult",
    "quality_tier",
    "face_to_frame_ratio",
    "normalise_scores",
    "dominant_emotion",
    "build_scan_result",
    "greeting",
]
