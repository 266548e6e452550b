from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
from typing import Optional

import numpy as np
import sounddevice as sd
import soundfile as sf

from errors import PlaybackError


class AudioPlayer:
    """Plays encoded audio clips on the default output device.

    ``play_base64`` resolves only once the device has drained the clip. The
    decoded buffer and the output stream are released whether playback ends,
    fails or is cancelled.
    """

    def __init__(self, device: Optional[str] = None) -> None:
        self._device = device

    async def play_base64(self, payload: str) -> None:
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise PlaybackError("Failed to play audio") from exc

        buffer = io.BytesIO(raw)
        try:
            samples, sample_rate = self._decode(buffer)
            await self.play(samples, sample_rate)
        finally:
            buffer.close()

    async def play(self, samples: np.ndarray, sample_rate: int) -> None:
        if samples.size == 0:
            return
        if samples.ndim == 1:
            samples = samples.reshape(-1, 1)
        samples = np.ascontiguousarray(samples, dtype=np.float32)

        loop = asyncio.get_running_loop()
        finished: asyncio.Future[None] = loop.create_future()
        position = 0

        def _callback(outdata, frames, time_info, status) -> None:
            nonlocal position
            del time_info
            if status:
                logging.debug("audio_playback_status status=%s", status)
            chunk = samples[position : position + frames]
            outdata[: len(chunk)] = chunk
            position += len(chunk)
            if len(chunk) < frames:
                outdata[len(chunk) :] = 0
                raise sd.CallbackStop

        def _resolve() -> None:
            if not finished.done():
                finished.set_result(None)

        def _on_finished() -> None:
            loop.call_soon_threadsafe(_resolve)

        stream: Optional[sd.OutputStream] = None
        try:
            stream = sd.OutputStream(
                samplerate=sample_rate,
                channels=samples.shape[1],
                dtype="float32",
                callback=_callback,
                finished_callback=_on_finished,
                device=self._device,
            )
            stream.start()
            await finished
        except sd.PortAudioError as exc:
            raise PlaybackError("Failed to play audio") from exc
        finally:
            if stream is not None:
                stream.close()
        logging.info("audio_playback_done frames=%d sample_rate=%d", position, sample_rate)

    @staticmethod
    def _decode(buffer: io.BytesIO) -> tuple[np.ndarray, int]:
        try:
            samples, sample_rate = sf.read(buffer, dtype="float32", always_2d=True)
        except RuntimeError as exc:
            # LibsndfileError derives from RuntimeError.
            raise PlaybackError("Failed to play audio") from exc
        return samples, int(sample_rate)
