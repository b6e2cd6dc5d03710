"""
FER+ model provider and inference engine, with the network and MediaPipe faked.
"""
from types import SimpleNamespace

import httpx
import numpy as np
import pytest

from emoscan.errors import ModelLoadError, ScanEngineError
from emoscan.inference.ferplus import FERPLUS_INPUT_SIZE, FerPlusEmotionModel, ferplus_scores, softmax

BASE_URL = "https://models.example.test/ferplus/"


class FakeDetector:
    def __init__(self, detections=None):
        self.detections = detections or []
        self.closed = False

    def process(self, rgb):
        return SimpleNamespace(detections=self.detections)

    def close(self):
        self.closed = True


class FakeNet:
    def __init__(self, logits=None, error=None):
        self.logits = np.asarray(logits if logits is not None else [0, 5, 0, 0, 0, 0, 0, 0], dtype=np.float32)
        self.error = error
        self.blob_shape = None

    def setInput(self, blob):
        self.blob_shape = blob.shape

    def forward(self):
        if self.error:
            raise self.error
        return self.logits[None, :]


def _detection(xmin, ymin, width, height, score=0.9):
    box = SimpleNamespace(xmin=xmin, ymin=ymin, width=width, height=height)
    return SimpleNamespace(score=[score], location_data=SimpleNamespace(relative_bounding_box=box))


def _model(settings, handler=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler)) if handler else None
    return FerPlusEmotionModel(settings.models, settings.scan, http_client=client)


@pytest.fixture
def fake_loaders(monkeypatch):
    monkeypatch.setattr(FerPlusEmotionModel, "_read_net", staticmethod(lambda path: FakeNet()))
    monkeypatch.setattr(FerPlusEmotionModel, "_create_detector", lambda self: FakeDetector())


class TestScores:
    def test_softmax_sums_to_one(self):
        assert softmax(np.array([1.0, 2.0, 3.0])).sum() == pytest.approx(1.0)

    def test_contempt_is_dropped(self):
        scores = ferplus_scores(np.zeros((1, 8)))
        assert set(scores) == {"happy", "sad", "angry", "surprised", "fearful", "disgusted", "neutral"}
        assert scores["happy"] == pytest.approx(0.125)
        assert sum(scores.values()) == pytest.approx(0.875)

    def test_label_mapping(self):
        logits = np.array([0, 0, 0, 0, 0, 0, 9, 0], dtype=np.float32)
        scores = ferplus_scores(logits)
        assert max(scores, key=scores.get) == "fearful"

    def test_wrong_output_size(self):
        with pytest.raises(ScanEngineError):
            ferplus_scores(np.zeros(7))


class TestLoadModels:
    @pytest.mark.asyncio
    async def test_downloads_and_caches(self, settings, fake_loaders):
        requests = []

        def handler(request):
            requests.append(str(request.url))
            return httpx.Response(200, content=b"onnx-bytes")

        model = _model(settings, handler)
        await model.load_models(BASE_URL)

        assert model.loaded
        assert requests == ["https://models.example.test/ferplus/emotion-ferplus-8.onnx"]
        cached = settings.models.cache_dir / "emotion-ferplus-8.onnx"
        assert cached.read_bytes() == b"onnx-bytes"

    @pytest.mark.asyncio
    async def test_cached_model_skips_download(self, settings, fake_loaders):
        settings.models.cache_dir.mkdir(parents=True)
        (settings.models.cache_dir / "emotion-ferplus-8.onnx").write_bytes(b"cached")

        def handler(request):
            raise AssertionError("network must not be used")

        model = _model(settings, handler)
        await model.load_models(BASE_URL)
        assert model.loaded

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "handler",
        [
            lambda request: httpx.Response(404, text="missing"),
            lambda request: httpx.Response(200, content=b""),
        ],
    )
    async def test_bad_responses_raise_model_load_error(self, settings, fake_loaders, handler):
        model = _model(settings, handler)
        with pytest.raises(ModelLoadError):
            await model.load_models(BASE_URL)
        assert not model.loaded

    @pytest.mark.asyncio
    @pytest.mark.parametrize("exc_type", [httpx.ConnectTimeout, httpx.ConnectError])
    async def test_network_failures_raise_model_load_error(self, settings, fake_loaders, exc_type):
        def handler(request):
            raise exc_type("unreachable", request=request)

        with pytest.raises(ModelLoadError) as info:
            await _model(settings, handler).load_models(BASE_URL)
        assert "internet connection" in info.value.user_message

    def test_unparseable_model_raises_model_load_error(self, tmp_path):
        bogus = tmp_path / "broken.onnx"
        bogus.write_bytes(b"definitely not protobuf")
        with pytest.raises(ModelLoadError):
            FerPlusEmotionModel._read_net(bogus)


class TestDetect:
    def _loaded(self, settings, detections, net=None):
        model = _model(settings)
        model._detector = FakeDetector(detections)
        model._net = net or FakeNet()
        return model

    @pytest.mark.asyncio
    async def test_detect_before_load(self, settings):
        with pytest.raises(ScanEngineError):
            await _model(settings).detect(np.zeros((720, 1280, 3), dtype=np.uint8))

    @pytest.mark.asyncio
    async def test_no_face_returns_none(self, settings):
        model = self._loaded(settings, [])
        assert await model.detect(np.zeros((720, 1280, 3), dtype=np.uint8)) is None

    @pytest.mark.asyncio
    async def test_face_is_cropped_and_scored(self, settings):
        net = FakeNet()
        model = self._loaded(settings, [_detection(0.25, 0.25, 0.1, 0.2)], net)

        face = await model.detect(np.zeros((720, 1280, 3), dtype=np.uint8))

        assert face.bounding_box.width == 128
        assert face.bounding_box.height == 144
        assert max(face.scores, key=face.scores.get) == "happy"
        assert net.blob_shape == (1, 1, FERPLUS_INPUT_SIZE, FERPLUS_INPUT_SIZE)

    @pytest.mark.asyncio
    async def test_most_confident_face_wins(self, settings):
        detections = [_detection(0.0, 0.0, 0.05, 0.05, score=0.6), _detection(0.5, 0.5, 0.25, 0.25, score=0.95)]
        model = self._loaded(settings, detections)
        face = await model.detect(np.zeros((400, 400, 3), dtype=np.uint8))
        assert face.bounding_box.width == 100

    @pytest.mark.asyncio
    async def test_box_is_clipped_to_frame(self, settings):
        model = self._loaded(settings, [_detection(0.9, 0.9, 0.5, 0.5)])
        face = await model.detect(np.zeros((100, 100, 3), dtype=np.uint8))
        assert (face.bounding_box.width, face.bounding_box.height) == (10, 10)

    @pytest.mark.asyncio
    async def test_box_with_negative_origin_is_clipped(self, settings):
        model = self._loaded(settings, [_detection(-0.2, -0.2, 0.4, 0.4)])
        face = await model.detect(np.zeros((100, 100, 3), dtype=np.uint8))
        assert (face.bounding_box.width, face.bounding_box.height) == (20, 20)

    @pytest.mark.asyncio
    async def test_network_failure_becomes_scan_engine_error(self, settings):
        model = self._loaded(settings, [_detection(0.2, 0.2, 0.3, 0.3)], FakeNet(error=RuntimeError("bad")))
        with pytest.raises(ScanEngineError):
            await model.detect(np.zeros((200, 200, 3), dtype=np.uint8))

    def test_close_releases_detector(self, settings):
        model = self._loaded(settings, [])
        detector = model._detector
        model.close()
        assert detector.closed
        assert not model.loaded
