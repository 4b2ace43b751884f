import asyncio
import gc
import threading

import numpy as np
import pytest
from PIL import Image

from captcha_vision.core.errors import (
    InferenceError,
    InputError,
    LoadError,
    PredictionError,
    ShapeMismatch,
)
from captcha_vision.models.domain import PreprocessResult
from captcha_vision.services.captcha import CaptchaModelConfig, CaptchaModelService, get_captcha_service
from captcha_vision.services.detection import DetectorModelService, get_detector_service
from captcha_vision.services.model_service import ModelState


@pytest.fixture
def captcha_png(png_bytes):
    return png_bytes(Image.new("RGBA", (160, 64), (0, 0, 0, 255)))


def test_get_instance_is_a_singleton_per_model_kind(make_loader):
    loader = make_loader()
    first = get_captcha_service({"model_path": "a.onnx"}, loader=loader)
    second = get_captcha_service({"model_path": "b.onnx"})

    assert first is second
    assert second.config.model_path == "a.onnx"
    assert get_detector_service() is not first
    assert isinstance(get_detector_service(), DetectorModelService)


def test_config_overrides_merge_over_defaults():
    svc = CaptchaModelService.create({"preprocessor": {"threshold": 200}, "decoder": {"min_confidence": 0.3}})
    cfg = svc.get_config()

    assert isinstance(cfg, CaptchaModelConfig)
    assert cfg.model_path == "models/huntbot.onnx"
    assert (cfg.preprocessor.width, cfg.preprocessor.height, cfg.preprocessor.threshold) == (160, 64, 200)
    assert (cfg.decoder.depth, cfg.decoder.min_confidence) == (27, 0.3)
    assert svc.preprocessor.get_config() is cfg.preprocessor
    assert svc.decoder.get_config() is cfg.decoder


def test_unknown_config_keys_are_rejected():
    with pytest.raises(ValueError):
        CaptchaModelService.create({"modelPath": "x.onnx"})
    with pytest.raises(ValueError):
        CaptchaModelService.create({"decoder": {"depht": 10}})


def test_concurrent_initialize_loads_once(make_loader, fake_session):
    loader = make_loader(session=fake_session(), delay=0.01)
    svc = CaptchaModelService.create(loader=loader)

    async def run():
        assert svc.state is ModelState.UNINITIALIZED
        await asyncio.gather(svc.initialize(), svc.initialize(), svc.initialize())
        await svc.initialize()

    asyncio.run(run())

    assert len(loader.calls) == 1
    assert svc.is_initialized()
    assert svc.state is ModelState.READY


def test_failed_load_keeps_failing_until_disposed(fake_session):
    outcomes = [RuntimeError("corrupt model"), fake_session()]
    calls = []

    async def loader(path):
        calls.append(path)
        outcome = outcomes[len(calls) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    svc = get_captcha_service(loader=loader)

    async def run():
        for _ in range(2):
            with pytest.raises(LoadError, match="corrupt model"):
                await svc.initialize()
        assert len(calls) == 1
        assert svc.state is ModelState.UNINITIALIZED
        assert not svc.is_initialized()

        await svc.dispose()
        await svc.initialize()

    asyncio.run(run())

    assert len(calls) == 2
    assert svc.is_initialized()


def test_dispose_clears_singleton(make_loader, fake_session):
    loader = make_loader(session=fake_session())
    svc = get_captcha_service(loader=loader)

    async def run():
        await svc.initialize()
        await svc.dispose()

    asyncio.run(run())

    assert svc.state is ModelState.DISPOSED
    assert not svc.is_initialized()
    rebuilt = get_captcha_service(loader=loader)
    assert rebuilt is not svc
    assert rebuilt.state is ModelState.UNINITIALIZED


def test_reset_forgets_singleton_without_disposing(make_loader, fake_session):
    svc = get_captcha_service(loader=make_loader(session=fake_session()))
    asyncio.run(svc.initialize())

    CaptchaModelService.reset()

    assert get_captcha_service() is not svc
    assert svc.is_initialized()


def test_dispose_during_load_discards_session(make_loader, fake_session):
    loader = make_loader(session=fake_session(), delay=0.05)
    svc = CaptchaModelService.create(loader=loader)

    async def run():
        pending = asyncio.ensure_future(svc.initialize())
        await asyncio.sleep(0)
        await svc.dispose()
        await pending

    asyncio.run(run())

    assert not svc.is_initialized()
    assert svc.state is ModelState.DISPOSED


def test_failed_load_abandoned_by_dispose_is_not_reported(make_loader):
    loader = make_loader(error=RuntimeError("corrupt model"), delay=0.01)
    svc = CaptchaModelService.create(loader=loader)
    reported = []

    async def run():
        asyncio.get_running_loop().set_exception_handler(lambda loop, ctx: reported.append(ctx))
        waiter = asyncio.ensure_future(svc.initialize())
        await asyncio.sleep(0)
        waiter.cancel()
        await svc.dispose()
        await asyncio.sleep(0.05)
        gc.collect()

    asyncio.run(run())

    assert len(loader.calls) == 1
    assert reported == []
    assert svc.state is ModelState.DISPOSED


def test_captcha_predict_end_to_end(make_loader, fake_session, one_hot_buffer, captcha_png):
    session = fake_session(output=one_hot_buffer([0, 1, 2, 3, 4], score=0.8).reshape(1, 5, 27))
    svc = get_captcha_service(loader=make_loader(session=session))

    result = asyncio.run(svc.predict(captcha_png))

    assert [r.value for r in result.results] == list("abcde")
    assert result.raw.shape == (135,)
    assert result.inference_time_ms >= 0

    output_names, feed = session.calls[0]
    assert output_names == ["output_1"]
    assert list(feed) == ["input_1"]
    assert feed["input_1"].shape == (1, 64, 160, 1)
    assert feed["input_1"].dtype == np.float32


def test_predict_as_string(make_loader, fake_session, one_hot_buffer, captcha_png):
    session = fake_session(output=one_hot_buffer([18, 14, 17, 19]))
    svc = get_captcha_service(loader=make_loader(session=session))

    assert asyncio.run(svc.predict_as_string(captcha_png)) == "sort"


def test_predict_wraps_decode_errors_and_keeps_instance(make_loader, fake_session, captcha_png):
    svc = get_captcha_service(loader=make_loader(session=fake_session(output=np.zeros(10, np.float32))))

    with pytest.raises(PredictionError) as exc:
        asyncio.run(svc.predict(captcha_png))

    assert exc.value.pipeline == "captcha"
    assert exc.value.stage == "decode"
    assert isinstance(exc.value.cause, ShapeMismatch)
    assert "(10)" in str(exc.value) and "(27)" in str(exc.value)
    assert get_captcha_service() is svc
    assert svc.is_initialized()


def test_predict_wraps_preprocess_errors(make_loader, fake_session):
    svc = get_captcha_service(loader=make_loader(session=fake_session()))

    with pytest.raises(PredictionError) as exc:
        asyncio.run(svc.predict(b"not an image"))

    assert exc.value.stage == "preprocess"
    assert isinstance(exc.value.cause, InputError)


def test_predict_wraps_load_errors(make_loader, captcha_png):
    svc = get_captcha_service(loader=make_loader(error=FileNotFoundError("missing.onnx")))

    with pytest.raises(PredictionError) as exc:
        asyncio.run(svc.predict(captcha_png))

    assert exc.value.stage == "initialize"
    assert isinstance(exc.value.cause, LoadError)
    assert "missing.onnx" in str(exc.value)


@pytest.mark.parametrize(
    "session_kwargs, message",
    [
        ({"output": None}, "No output from model"),
        ({"error": RuntimeError("bad input shape")}, "bad input shape"),
    ],
)
def test_predict_wraps_inference_errors(make_loader, fake_session, captcha_png, session_kwargs, message):
    svc = get_captcha_service(loader=make_loader(session=fake_session(**session_kwargs)))

    with pytest.raises(PredictionError) as exc:
        asyncio.run(svc.predict(captcha_png))

    assert exc.value.stage == "inference"
    assert isinstance(exc.value.cause, InferenceError)
    assert message in str(exc.value)


def test_in_flight_predict_survives_dispose(make_loader, fake_session, one_hot_buffer, captcha_png):
    started = threading.Event()
    release = threading.Event()

    class BlockingSession(fake_session):
        def run(self, output_names, input_feed):
            started.set()
            release.wait(timeout=5)
            return super().run(output_names, input_feed)

    svc = get_captcha_service(loader=make_loader(session=BlockingSession(output=one_hot_buffer([0]))))

    async def run():
        pending = asyncio.ensure_future(svc.predict(captcha_png))
        while not started.is_set():
            await asyncio.sleep(0.001)
        await svc.dispose()
        release.set()
        return await pending

    result = asyncio.run(run())

    assert [r.value for r in result.results] == ["a"]
    assert not svc.is_initialized()


def test_detector_predict_uses_channel_first_layout(make_loader, fake_session, png_bytes):
    output = np.array([10, 20, 30, 40, 0.9, 0.2, 0.8], dtype=np.float32).reshape(1, 1, 7)
    session = fake_session(output=output, input_name="images", output_name="output0")
    svc = get_detector_service(
        {
            "preprocessor": {"width": 32, "height": 16},
            "decoder": {"num_classes": 2, "class_names": ["cat", "dog"]},
        },
        loader=make_loader(session=session),
    )

    result = asyncio.run(svc.predict(png_bytes(Image.new("RGB", (50, 50), (255, 0, 0)))))

    assert len(result.results) == 1
    assert result.results[0].value.class_name == "dog"
    assert result.results[0].confidence == pytest.approx(0.72, rel=1e-6)
    tensor = session.calls[0][1]["images"]
    assert tensor.shape == (1, 3, 16, 32)
    assert tensor.flags["C_CONTIGUOUS"]


def test_detector_to_tensor_moves_channels_first():
    svc = DetectorModelService.create()
    pre = PreprocessResult(data=np.arange(6, dtype=np.float32), width=2, height=1, channels=3)

    tensor = svc.to_tensor(pre)

    assert tensor.shape == (1, 3, 1, 2)
    assert tensor[0, :, 0, :].tolist() == [[0, 3], [1, 4], [2, 5]]


def test_preprocess_result_checks_length():
    with pytest.raises(ValueError):
        PreprocessResult(data=np.zeros(5, np.float32), width=2, height=1, channels=3)
