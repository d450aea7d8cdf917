"""
週次 / 節次 / 單雙週顯示計算服務
"""
import re
from datetime import datetime, timedelta

from config import Config

WEEK_RANGE_RE = re.compile(r'^(\d+)-(\d+)$')
TIME_RE = re.compile(r'^(\d{1,2}):([0-5]\d)$')

DAY_NAMES = {
    1: '星期一',
    2: '星期二',
    3: '星期三',
    4: '星期四',
    5: '星期五',
    6: '星期六',
    7: '星期日',
}

WEEK_TYPE_DISPLAY = {
    'all': '每週',
    'odd': '單週',
    'even': '雙週',
}


def _now(now):
    if now is not None:
        return now
    from services.clock_service import get_clock
    return get_clock().now()


def _semester_start(semester_start):
    return semester_start if semester_start is not None else Config.SEMESTER_START


# ===== 週次 =====

def monday_of(d):
    """該日所在週的週一 (時間歸零)"""
    if isinstance(d, datetime):
        d = d.date()
    return d - timedelta(days=d.isoweekday() - 1)


def get_current_week(now=None, semester_start=None):
    """目前學期週次 (從 1 開始, 學期開始前一律為第 1 週)"""
    this_monday = monday_of(_now(now))
    semester_monday = monday_of(_semester_start(semester_start))
    diff_weeks = (this_monday - semester_monday).days // 7
    return max(1, diff_weeks + 1)


def get_current_day_of_week(now=None):
    """目前星期幾 (1-7, 1=星期一, 7=星期日)"""
    return _now(now).isoweekday()


def is_today(day_of_week, now=None):
    return get_current_day_of_week(now) == day_of_week


def get_week_date_range(week, semester_start=None):
    """指定週次的日期範圍 (週一 ~ 週日)"""
    start = _semester_start(semester_start) + timedelta(weeks=week - 1)
    return start, start + timedelta(days=6)


def format_date(d):
    return d.strftime('%Y-%m-%d')


def get_current_date_string(now=None):
    return format_date(_now(now))


def get_week_type_display(week_type):
    return WEEK_TYPE_DISPLAY.get(week_type, WEEK_TYPE_DISPLAY['all'])


# ===== 節次 =====

def time_to_minutes(hhmm):
    """'H:MM' 或 'HH:MM' → 當天的分鐘數"""
    match = TIME_RE.match(hhmm.strip()) if isinstance(hhmm, str) else None
    if not match or int(match.group(1)) > 23:
        raise ValueError(f"時間格式錯誤: {hhmm!r}")
    return int(match.group(1)) * 60 + int(match.group(2))


class PeriodTable:
    """節次 → [開始分鐘, 結束分鐘] 對照表, 由作息時間表建立"""

    def __init__(self, time_slots):
        self._intervals = {
            slot.period: (time_to_minutes(slot.start_time), time_to_minutes(slot.end_time))
            for slot in time_slots
        }

    def __contains__(self, label):
        return label in self._intervals

    def labels(self):
        return list(self._intervals)

    def interval(self, label):
        return self._intervals.get(label)

    def is_current_period(self, label, now=None):
        """目前時間是否落在該節次內 (兩端皆包含)"""
        interval = self._intervals.get(label)
        if interval is None:
            return False
        now = _now(now)
        current = now.hour * 60 + now.minute
        start, end = interval
        return start <= current <= end


# ===== 單雙週 / 週次範圍 =====

def parse_week_range(week_range):
    """'1-15' → (1, 15), 格式錯誤或範圍顛倒時回傳 None"""
    if not week_range:
        return None
    match = WEEK_RANGE_RE.match(str(week_range).strip())
    if not match:
        return None
    start, end = int(match.group(1)), int(match.group(2))
    if start < 1 or start > end:
        return None
    return start, end


def is_week_in_range(week, week_range):
    """週次是否在範圍內, 範圍格式錯誤時視為不限制"""
    bounds = parse_week_range(week_range)
    if bounds is None:
        return True
    start, end = bounds
    return start <= week <= end


def should_show_course(week_type, week, week_range=None):
    """課程是否應在指定週次顯示"""
    if week_range and not is_week_in_range(week, week_range):
        return False

    if week_type == 'odd':
        return week % 2 == 1
    if week_type == 'even':
        return week % 2 == 0
    return True
