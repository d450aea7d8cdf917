"""
網路時間同步服務 - 外部時間 API 校正本地時鐘, 失敗時回退本地時間
"""
import os
import json
import logging
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable

import requests

from config import Config
from models import MAX_CLOCK_OFFSET_MS, ClockState

logger = logging.getLogger(__name__)

_clock_instance = None


def _as_instant(dt, default_tz):
    """無時區資訊的時間視為 default_tz"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=default_tz)
    return dt


def _parse_worldtimeapi(data):
    return _as_instant(datetime.fromisoformat(data['datetime']), timezone(Config.TIMEZONE_OFFSET))


def _parse_timeapi_io(data):
    # 回傳台北當地時間, 不含時區
    return _as_instant(datetime.fromisoformat(data['dateTime']), timezone(Config.TIMEZONE_OFFSET))


def _parse_worldclockapi(data):
    return _as_instant(datetime.fromisoformat(data['currentDateTime']), timezone.utc)


@dataclass(frozen=True)
class TimeProvider:
    """時間 API: 端點 + 回應解析"""
    name: str
    url: str
    parse: Callable[[dict], datetime]


# 依優先順序嘗試
TIME_PROVIDERS = [
    TimeProvider(
        'worldtimeapi',
        f'https://worldtimeapi.org/api/timezone/{Config.TIMEZONE_NAME}',
        _parse_worldtimeapi,
    ),
    TimeProvider(
        'timeapi.io',
        f'https://timeapi.io/api/Time/current/zone?timeZone={Config.TIMEZONE_NAME}',
        _parse_timeapi_io,
    ),
    TimeProvider(
        'worldclockapi',
        'https://worldclockapi.com/api/json/utc/now',
        _parse_worldclockapi,
    ),
]


def _local_now():
    return datetime.now().astimezone()


class ClockStateStore:
    """同步狀態的本地 JSON 儲存 (固定 key 的單一紀錄)"""

    def __init__(self, filepath=None, key=None):
        self.filepath = filepath or Config.CLOCK_STATE_FILE
        self.key = key or Config.CLOCK_STATE_KEY

    def _load_data(self):
        try:
            with open(self.filepath, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError, FileNotFoundError):
            return {}
        except OSError as e:
            logger.warning(f"同步狀態檔讀取失敗: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def load(self):
        """讀取同步狀態, 檔案不存在或損壞時回傳預設值"""
        record = self._load_data().get(self.key)
        if record is None:
            return ClockState()
        try:
            state = ClockState.from_dict(record)
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning(f"同步狀態格式錯誤, 使用預設值: {e}")
            return ClockState()
        if state.last_sync_time is not None and state.last_sync_time.tzinfo is None:
            state.last_sync_time = state.last_sync_time.astimezone()
        return state

    def save(self, state):
        data = self._load_data()
        data[self.key] = state.to_dict()
        os.makedirs(os.path.dirname(os.path.abspath(self.filepath)), exist_ok=True)
        with open(self.filepath, 'w', encoding='utf-8') as f:
            json.dump(data, f, ensure_ascii=False, indent=2)


class ClockSource:
    """目前時間來源 (網路時間優先, 過期或失敗時回退本地時間)"""

    def __init__(self, store=None, providers=None, local_now=None, http_get=None,
                 sync_interval=None, timeout=None, monotonic=None):
        self._store = store if store is not None else ClockStateStore()
        self._providers = list(providers) if providers is not None else list(TIME_PROVIDERS)
        self._local_now = local_now or _local_now
        self._http_get = http_get or requests.get
        self._sync_interval = sync_interval or Config.TIME_SYNC_INTERVAL
        self._timeout = timeout or Config.TIME_SYNC_TIMEOUT
        self._monotonic = monotonic or time.monotonic
        self._state = None
        self._state_lock = threading.Lock()
        self._sync_lock = threading.Lock()

    # ----- 狀態 -----

    def _load_state(self):
        # 第一次使用時才讀取
        if self._state is None:
            self._state = self._store.load()
        return self._state

    def _persist(self, state):
        try:
            self._store.save(state)
        except OSError as e:
            logger.error(f"同步狀態儲存失敗: {e}")

    def _is_fresh(self, state, local):
        if state.last_sync_time is None:
            return False
        return local - state.last_sync_time <= self._sync_interval

    def get_state(self):
        """完整同步狀態的複本"""
        with self._state_lock:
            return replace(self._load_state())

    def get_sync_status(self):
        with self._state_lock:
            state = self._load_state()
            return {
                "isNetworkTime": state.is_network_time,
                "lastSyncTime": state.last_sync_time.isoformat() if state.last_sync_time else None,
                "error": state.error,
            }

    # ----- 時間 -----

    def now(self):
        """目前時間, 網路時間有效時套用偏移量"""
        local = self._local_now()
        with self._state_lock:
            state = self._load_state()
            if state.is_network_time:
                if self._is_fresh(state, local):
                    return local + timedelta(milliseconds=state.offset)
                logger.info("網路時間已過期, 改用本地時間")
                state.is_network_time = False
                self._persist(state)
        return local

    # ----- 同步 -----

    def _fetch(self, provider, deadline):
        """讀取並解析一個時間 API, 連線加上讀取回應不超過 deadline"""
        remaining = deadline - self._monotonic()
        if remaining <= 0:
            raise requests.Timeout(f"超過 {self._timeout} 秒同步時限")
        resp = self._http_get(provider.url, timeout=min(self._timeout, remaining),
                              headers={'Accept': 'application/json'}, stream=True)
        try:
            resp.raise_for_status()
            # requests 的 timeout 只限制單次讀取, 緩慢回應需自行檢查總時限
            body = bytearray()
            for chunk in resp.iter_content(chunk_size=1024):
                body.extend(chunk)
                if self._monotonic() > deadline:
                    raise requests.Timeout(f"{provider.name} 回應超過 {self._timeout} 秒同步時限")
        finally:
            resp.close()
        return provider.parse(json.loads(body))

    def sync(self):
        """向時間 API 同步, 回傳是否成功 (同一時間只執行一次)"""
        if not self._sync_lock.acquire(blocking=False):
            logger.info("時間同步進行中, 略過此次請求")
            return False
        try:
            return self._sync()
        finally:
            self._sync_lock.release()

    def _sync(self):
        last_error = None
        # 所有 API 共用一個時限
        deadline = self._monotonic() + self._timeout
        for provider in self._providers:
            try:
                remote = self._fetch(provider, deadline)
            except (requests.RequestException, ValueError, KeyError, TypeError) as e:
                last_error = f"{provider.name}: {e}"
                logger.warning(f"時間 API {provider.url} 失敗: {e}")
                continue

            local = self._local_now()
            offset = round((remote.timestamp() - local.timestamp()) * 1000)
            if abs(offset) > MAX_CLOCK_OFFSET_MS:
                last_error = f"{provider.name}: 偏移量不合理 ({offset}ms)"
                logger.warning(f"時間 API {provider.url} 回傳時間不合理, 偏移 {offset}ms")
                continue
            with self._state_lock:
                self._state = ClockState(
                    is_network_time=True,
                    last_sync_time=local,
                    error=None,
                    offset=offset,
                )
                self._persist(self._state)
            logger.info(f"時間同步成功: {provider.name} (偏移 {offset}ms)")
            return True

        local = self._local_now()
        with self._state_lock:
            state = self._load_state()
            state.error = last_error or '所有時間 API 都無法連線'
            if not self._is_fresh(state, local):
                state.is_network_time = False
            self._persist(state)
        logger.warning(f"時間同步失敗, 使用本地時間: {state.error}")
        return False


def get_clock():
    """時鐘單例"""
    global _clock_instance
    if _clock_instance is None:
        _clock_instance = ClockSource()
    return _clock_instance


def set_clock(clock):
    """替換時鐘實例 (測試或自訂時間來源)"""
    global _clock_instance
    _clock_instance = clock
