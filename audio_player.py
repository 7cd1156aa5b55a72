from typing import Callable, Optional

import numpy as np
import sounddevice as sd


class AudioPlayer:
    """
    Single-stream player for short reference clips. Load float32 data with
    set_data(), then play(). Starting again aborts whatever was playing.

    on_finished() is called from the audio thread when a clip plays to the
    end; on_error(message) when the device cannot be opened or started.
    """

    def __init__(
        self,
        samplerate: int,
        on_finished: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
    ):
        self.sr = samplerate
        self.data = np.zeros((0,), dtype=np.float32)
        self.idx = 0
        self.on_finished = on_finished
        self.on_error = on_error
        self._aborted = False
        self.stream = None

    def _open(self) -> None:
        if self.stream is not None:
            return
        self.stream = sd.OutputStream(
            samplerate=self.sr,
            channels=1,
            dtype="float32",
            callback=self._callback,
            finished_callback=self._finished,
            blocksize=1024,
            latency="high",
        )

    def _callback(self, outdata, frames, time_info, status):
        if self.idx >= self.data.size:
            outdata.fill(0)
            raise sd.CallbackStop()
        end = self.idx + frames
        chunk = self.data[self.idx : end]
        n = chunk.shape[0]
        outdata[:n, 0] = chunk
        if n < frames:
            outdata[n:frames, 0] = 0
            self.idx = self.data.size
            raise sd.CallbackStop()
        self.idx = end

    def _finished(self) -> None:
        # Runs for stop/abort too; only report clips that reached the end
        if self._aborted or self.idx < self.data.size:
            return
        if self.on_finished is not None:
            self.on_finished()

    def set_data(self, data: np.ndarray) -> None:
        self.stop()
        self.data = np.ascontiguousarray(data, dtype=np.float32)
        self.idx = 0

    def play(self) -> None:
        """Play the loaded clip from the beginning."""
        if self.data.size == 0:
            return
        self.stop()
        self.idx = 0
        self._aborted = False
        try:
            self._open()
            self.stream.start()
        except sd.PortAudioError as e:
            if self.on_error is not None:
                self.on_error(str(e))

    def pause(self) -> None:
        """Halt output but keep the position for resume()."""
        if self.stream is not None and self.stream.active:
            self._aborted = True
            self.stream.stop()

    def resume(self) -> None:
        if self.stream is None or self.idx >= self.data.size:
            return
        self._aborted = False
        try:
            self.stream.start()
        except sd.PortAudioError as e:
            if self.on_error is not None:
                self.on_error(str(e))

    def stop(self) -> None:
        """Stop playback immediately."""
        self._aborted = True
        if self.stream is None:
            return
        try:
            # abort() also clears a finished CallbackStop state
            self.stream.abort()
        except sd.PortAudioError:
            pass

    def close(self) -> None:
        self.stop()
        if self.stream is not None:
            self.stream.close()
            self.stream = None

