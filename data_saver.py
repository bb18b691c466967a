# data_saver.py
import asyncio
import logging
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)


class AsyncDataSaver:
    """Append canonical sample lines to <save_dir>/<prefix>_<YYYYmmdd>.log off the notification path."""

    def __init__(self, save_dir="~/.cache", prefix="polarh10"):
        self.queue = asyncio.Queue()
        self.save_dir = Path(save_dir).expanduser()
        self.prefix = prefix
        self.task = None

    def submit(self, line: str):
        self.queue.put_nowait(line)

    async def start(self):
        self.save_dir.mkdir(parents=True, exist_ok=True)
        self.task = asyncio.create_task(self._run())
        logger.info("Output -> %s", self.path_for(datetime.now()))

    async def stop(self):
        await self.queue.put(None)
        if self.task:
            await self.task

    def path_for(self, when: datetime) -> Path:
        key = when.strftime("%Y%m%d")
        return self.save_dir / f"{self.prefix}_{key}.log"

    async def _run(self):
        while True:
            item = await self.queue.get()
            if item is None:
                break
            lines = [item]
            # drain whatever queued up meanwhile into one write
            while not self.queue.empty():
                nxt = self.queue.get_nowait()
                if nxt is None:
                    self._save(lines)
                    return
                lines.append(nxt)
            self._save(lines)

    def _save(self, lines):
        path = self.path_for(datetime.now())
        try:
            with path.open("a", encoding="utf-8") as f:
                f.write("\n".join(lines) + "\n")
        except OSError as exc:
            logger.warning("[DataSaver] write to %s failed: %s", path, exc)
            return
        logger.debug("[DataSaver] Saved %d line(s) to: %s", len(lines), path)
