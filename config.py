import os
from datetime import date, timedelta


def _env_flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """應用程式設定"""

    BASE_DIR = os.path.dirname(os.path.abspath(__file__))

    # 安全
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'class-schedule-secret-key'

    # 課表靜態資料
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    SCHEDULE_FILE = os.environ.get('SCHEDULE_FILE') or os.path.join(DATA_DIR, 'schedule.json')

    # 學期設定 (第一週週一)
    SEMESTER_START = date.fromisoformat(os.environ.get('SEMESTER_START', '2025-09-15'))
    SEMESTER_WEEKS = int(os.environ.get('SEMESTER_WEEKS', 20))

    # 時區 (外部時間來源固定為台北時間)
    TIMEZONE_OFFSET = timedelta(hours=8)
    TIMEZONE_NAME = 'Asia/Taipei'

    # 網路時間同步
    CLOCK_STATE_FILE = os.environ.get('CLOCK_STATE_FILE') or os.path.join(DATA_DIR, 'clock_state.json')
    CLOCK_STATE_KEY = 'timeSyncState'
    TIME_SYNC_ENABLED = _env_flag('TIME_SYNC_ENABLED', True)
    TIME_SYNC_INTERVAL = timedelta(minutes=30)
    TIME_SYNC_TIMEOUT = 5  # 秒

    # 日誌
    LOG_DIR = os.path.join(BASE_DIR, 'logs')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # 伺服器
    HOST = '0.0.0.0'
    PORT = int(os.environ.get('PORT', 5000))
    DEBUG = os.environ.get('FLASK_ENV') == 'development'
