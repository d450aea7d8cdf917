"""
週期性背景工作 (呼叫端持有, 可取消)
"""
import logging
import threading

logger = logging.getLogger(__name__)


class RepeatingTask:
    """每隔 interval 秒在背景執行緒呼叫一次 func, cancel() 後停止"""

    def __init__(self, interval, func, name=None, run_immediately=False):
        if interval <= 0:
            raise ValueError(f"interval 必須大於 0: {interval}")
        self.interval = interval
        self.func = func
        self.name = name or getattr(func, '__name__', 'repeating-task')
        self.run_immediately = run_immediately
        self._stop = threading.Event()
        self._thread = None

    @property
    def is_running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.is_running:
            return self
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        return self

    def cancel(self, timeout=None):
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def _run(self):
        if self.run_immediately:
            self._call()
        while not self._stop.wait(self.interval):
            self._call()

    def _call(self):
        try:
            self.func()
        except Exception as e:
            logger.error(f"背景工作 {self.name} 執行失敗: {e}", exc_info=True)
