"""Single-instance locking for the ordstack supervisor."""

import fcntl
import os
import signal
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ordstack.config import OrdstackConfig


class ProcessLock:
    """Manages single instance locking and supervisor discovery."""

    def __init__(self, config: "OrdstackConfig") -> None:
        self.lock_file = config.state_dir / "ordstack.lock"
        self.lock_fd: int | None = None

    def acquire(self) -> bool:
        """Try to acquire exclusive lock. Returns True if successful."""
        try:
            self.lock_file.parent.mkdir(parents=True, exist_ok=True)
            self.lock_fd = os.open(str(self.lock_file), os.O_CREAT | os.O_WRONLY)
            fcntl.flock(self.lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            # Record our PID so `ordstack stop` can find us
            os.ftruncate(self.lock_fd, 0)
            os.write(self.lock_fd, str(os.getpid()).encode())
            os.fsync(self.lock_fd)
            return True
        except OSError:
            if self.lock_fd is not None:
                os.close(self.lock_fd)
                self.lock_fd = None
            return False

    def release(self) -> None:
        """Release the lock."""
        if self.lock_fd is not None:
            try:
                fcntl.flock(self.lock_fd, fcntl.LOCK_UN)
                os.close(self.lock_fd)
            except OSError:
                pass
            finally:
                self.lock_fd = None

    def is_held(self) -> bool:
        """True when some process currently holds the lock."""
        if not self.lock_file.exists():
            return False
        fd = os.open(str(self.lock_file), os.O_RDONLY)
        try:
            fcntl.flock(fd, fcntl.LOCK_SH | fcntl.LOCK_NB)
        except OSError:
            return True
        else:
            fcntl.flock(fd, fcntl.LOCK_UN)
            return False
        finally:
            os.close(fd)

    def find_supervisor(self) -> int | None:
        """PID of the running supervisor, or None."""
        if self.lock_fd is not None or not self.is_held():
            return None
        try:
            pid = int(self.lock_file.read_text().strip())
        except (OSError, ValueError):
            return None
        return pid if self.is_process_running(pid) else None

    @staticmethod
    def is_process_running(pid: int) -> bool:
        """Check if a process with given PID is running."""
        try:
            os.kill(pid, 0)
            return True
        except (OSError, ProcessLookupError):
            return False

    @staticmethod
    def stop_process(pid: int, timeout: int = 30) -> bool:
        """Stop a process gracefully, then forcefully if needed."""
        try:
            # SIGTERM lets the supervisor stop ord and bitcoind in order
            os.kill(pid, signal.SIGTERM)

            for _ in range(timeout):
                if not ProcessLock.is_process_running(pid):
                    return True
                time.sleep(1)

            # Force kill if still running
            os.kill(pid, signal.SIGKILL)
            time.sleep(0.5)
            return not ProcessLock.is_process_running(pid)

        except (OSError, ProcessLookupError):
            return True  # Process already stopped
