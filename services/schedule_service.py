"""
課表靜態資料讀取 + 週課表格式轉換服務
"""
import json
import logging

from config import Config
from models import Course, ScheduleData, TimeSlot
from services.calendar_service import (
    DAY_NAMES,
    PeriodTable,
    get_current_day_of_week,
    get_week_type_display,
    should_show_course,
)

logger = logging.getLogger(__name__)

_schedule_cache = {}


def parse_schedule(data):
    """JSON 課表 → ScheduleData"""
    # 作息時間表錯誤會影響所有課程, 直接拋出
    time_slots = [TimeSlot.from_dict(s) for s in data.get('timeSlots', [])]

    courses = []
    seen_ids = set()
    for raw in data.get('courses', []):
        try:
            course = Course.from_dict(raw)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"略過格式錯誤的課程 {raw.get('id', '?') if isinstance(raw, dict) else raw!r}: {e}")
            continue
        if course.id in seen_ids:
            logger.warning(f"略過重複的課程 ID: {course.id}")
            continue
        seen_ids.add(course.id)
        courses.append(course)

    notes = [str(n) for n in data.get('notes', []) + data.get('specialNotes', [])]
    return ScheduleData(time_slots=time_slots, courses=courses, notes=notes)


def load_schedule(path=None):
    """課表檔讀取 (每個路徑只讀一次)"""
    path = path or Config.SCHEDULE_FILE
    if path not in _schedule_cache:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        schedule = parse_schedule(data)
        logger.info(f"課表載入完成: {len(schedule.courses)}門課程, {len(schedule.time_slots)}個節次")
        _schedule_cache[path] = schedule
    return _schedule_cache[path]


def get_schedule():
    return load_schedule(Config.SCHEDULE_FILE)


def find_course(schedule, course_id):
    for course in schedule.courses:
        if course.id == course_id:
            return course
    return None


def build_week_view(schedule, week, now):
    """指定週次的課表格子 (節次 x 星期)"""
    periods = PeriodTable(schedule.time_slots)
    slots = schedule.time_slot_map()
    today = get_current_day_of_week(now)

    visible = [c for c in schedule.courses if should_show_course(c.week_type, week, c.week_range)]
    # 節次不在作息表內的課程無法放入格子
    unplaced = [c.id for c in visible if c.periods not in periods]

    rows = []
    for label in periods.labels():
        start_minute, end_minute = periods.interval(label)
        is_current = periods.is_current_period(label, now)
        cells = []
        for day in DAY_NAMES:
            courses = []
            for course in visible:
                if course.day_of_week == day and course.periods == label:
                    d = course.to_dict()
                    d["weekTypeDisplay"] = get_week_type_display(course.week_type)
                    courses.append(d)
            cells.append({
                "dayOfWeek": day,
                "isToday": day == today,
                "isCurrent": day == today and is_current,
                "courses": courses,
            })
        rows.append({
            "timeSlot": slots[label].to_dict(),
            "startMinute": start_minute,
            "endMinute": end_minute,
            "isCurrentPeriod": is_current,
            "cells": cells,
        })

    return {
        "week": week,
        "days": [{"dayOfWeek": d, "name": name, "isToday": d == today} for d, name in DAY_NAMES.items()],
        "rows": rows,
        "visibleCourseCount": len(visible),
        "unplacedCourseIds": unplaced,
    }
