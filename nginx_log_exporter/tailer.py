"""Follow a log file across appends, rotation and truncation."""

import logging
import os
import threading

from watchdog.events import FileSystemEventHandler

logger = logging.getLogger(__name__)


class FileTailer:
    """Watches a log file for new lines and calls a callback for each one.

    Handles:
    - Starting at the end of the file or, with from_beginning, at offset 0
    - Partial lines (held back as bytes until their newline is written)
    - Log rotation (inode change detection)
    - File truncation (seek back to start)
    - The path being missing or unreadable for a while (keeps polling)

    Between reads the tailer parks on a wake-up event. ``notify()`` (called
    by ``TailEventHandler`` on filesystem events) ends the wait early;
    otherwise it falls back to polling every ``poll_interval`` seconds.
    """

    def __init__(
        self,
        path: str,
        shutdown_event: threading.Event,
        callback=None,
        from_beginning: bool = False,
        poll_interval: float = 0.25,
    ):
        self.path = path
        self._shutdown = shutdown_event
        self._callback = callback
        self._from_beginning = from_beginning
        self._poll_interval = poll_interval
        self._changed = threading.Event()
        self._file = None
        self._inode = None
        self._partial = b""
        self._open_failing = False

    def notify(self):
        self._changed.set()

    def _wait(self):
        self._changed.wait(self._poll_interval)
        self._changed.clear()

    def run(self):
        """Main tailing loop. Blocks until shutdown_event is set."""
        try:
            self._open_file(seek_end=not self._from_beginning)
        except OSError as e:
            logger.warning("Cannot open %s before tailing started, waiting for it: %s", self.path, e)
            self._open_failing = True
        try:
            while not self._shutdown.is_set():
                try:
                    self._step()
                except Exception:
                    logger.exception("Unexpected error tailing %s, reopening", self.path)
                    self._close_file()
                    self._wait()
        finally:
            self._close_file()

    def _step(self):
        if self._file is None and not self._reopen():
            self._wait()
            return

        if self._check_rotation():
            return

        if self._check_truncation():
            return

        if not self._read_available():
            self._wait()

    def _open_file(self, seek_end: bool = False):
        """Open the file and optionally seek to the end."""
        self._file = open(self.path, "rb")
        self._inode = os.fstat(self._file.fileno()).st_ino
        self._partial = b""
        if seek_end:
            self._file.seek(0, os.SEEK_END)
        logger.debug("Opened %s (inode=%d)", self.path, self._inode)

    def _reopen(self) -> bool:
        """Open the file at the same path from the start. Returns False if it cannot be opened."""
        try:
            self._open_file(seek_end=False)
        except FileNotFoundError:
            logger.debug("Waiting for %s to reappear", self.path)
            self._file = None
            return False
        except OSError as e:
            if not self._open_failing:
                logger.warning("Cannot reopen %s, will keep retrying: %s", self.path, e)
            self._open_failing = True
            self._close_file()
            return False
        if self._open_failing:
            logger.info("Reopened %s", self.path)
            self._open_failing = False
        return True

    def _close_file(self):
        """Close the current file handle."""
        if self._file:
            self._file.close()
        self._file = None

    def _read_available(self) -> bool:
        """Emit every complete line currently readable. Returns True if any data was read.

        Lines are decoded only once their newline has arrived, so a write that
        stops inside a multi-byte character is reassembled intact.
        """
        got_data = False
        while not self._shutdown.is_set():
            chunk = self._file.readline()
            if not chunk:
                break
            got_data = True
            if not chunk.endswith(b"\n"):
                self._partial += chunk
                break
            raw = (self._partial + chunk).rstrip(b"\r\n")
            self._partial = b""
            line = raw.decode("utf-8", errors="replace")
            if line.strip() and self._callback:
                self._callback(line)
        return got_data

    def _check_rotation(self) -> bool:
        """Detect log rotation by comparing inodes. Returns True if rotated."""
        try:
            current_inode = os.stat(self.path).st_ino
        except OSError:
            return False

        if current_inode != self._inode:
            logger.info("File rotation detected for %s", self.path)
            # Read any remaining lines from old file
            self._read_available()
            self._close_file()
            self._reopen()
            return True
        return False

    def _check_truncation(self) -> bool:
        """Detect file truncation (e.g., > file). Returns True if truncated."""
        try:
            file_size = os.path.getsize(self.path)
        except OSError:
            return False

        current_pos = self._file.tell()
        if current_pos > file_size:
            logger.info("File truncation detected for %s", self.path)
            self._file.seek(0)
            self._partial = b""
            return True
        return False


class TailEventHandler(FileSystemEventHandler):
    """Routes watchdog events for tailed files to their tailers."""

    def __init__(self, tailers: list[FileTailer]):
        super().__init__()
        self._tailers = {os.path.abspath(t.path): t for t in tailers}

    def _wake(self, path):
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        tailer = self._tailers.get(os.path.abspath(path))
        if tailer is not None:
            tailer.notify()

    def on_any_event(self, event):
        if event.is_directory:
            return
        self._wake(event.src_path)
        dest = getattr(event, "dest_path", "")
        if dest:
            self._wake(dest)

    def get_watched_dirs(self) -> set[str]:
        """Return unique parent directories of tailed files (for Observer scheduling)."""
        return {os.path.dirname(p) for p in self._tailers}
