"""
Class Schedule - 路由定義
"""
import logging
from flask import Blueprint, render_template, jsonify, request

from config import Config
from services.calendar_service import (
    format_date,
    get_current_date_string,
    get_current_day_of_week,
    get_current_week,
    get_week_date_range,
)
from services.clock_service import get_clock
from services.progress_service import (
    calculate_course_progress,
    calculate_semester_progress,
    format_duration,
    get_all_courses_progress,
    get_progress_status,
)
from services.schedule_service import build_week_view, find_course, get_schedule
from utils.error_handlers import handle_errors

logger = logging.getLogger(__name__)

main_bp = Blueprint('main', __name__)
api_bp = Blueprint('api', __name__, url_prefix='/api')


def _parse_week(value, default):
    """週次參數驗證"""
    if value is None or value == '':
        return default
    try:
        week = int(value)
    except (TypeError, ValueError):
        raise ValueError("週次必須是整數。")
    if week < 1:
        raise ValueError("週次必須大於等於 1。")
    return week


def _week_info(week):
    """週次 + 日期範圍顯示文字"""
    start, end = get_week_date_range(week)
    return {
        "week": week,
        "startDate": format_date(start),
        "endDate": format_date(end),
        "label": f"第{week}週 ({start.strftime('%m/%d')} - {end.strftime('%m/%d')})",
    }


def _render_schedule_page():
    current_week = get_current_week()
    # 學期結束後仍可選到本週
    last_week = max(Config.SEMESTER_WEEKS, current_week)
    return render_template(
        'schedule.html',
        max_week=last_week,
        week_options=[_week_info(w) for w in range(1, last_week + 1)],
    )


def _progress_summary(progress):
    d = progress.to_dict()
    d["status"] = get_progress_status(progress.progress_percentage)
    d["totalDisplay"] = format_duration(progress.total_minutes)
    d["completedDisplay"] = format_duration(progress.completed_minutes)
    d["remainingDisplay"] = format_duration(progress.remaining_minutes)
    return d


# ===== 頁面路由 =====

@main_bp.route('/')
def index():
    return _render_schedule_page()


@main_bp.route('/schedule')
def schedule_page():
    return _render_schedule_page()


# ===== API 路由 =====

@api_bp.route('/time', methods=['GET'])
@handle_errors
def get_time():
    """目前時間 / 週次 / 同步狀態"""
    clock = get_clock()
    now = clock.now()
    return jsonify({
        "success": True,
        "now": now.isoformat(),
        "date": get_current_date_string(now),
        "currentWeek": get_current_week(now),
        "currentDayOfWeek": get_current_day_of_week(now),
        "sync": clock.get_sync_status(),
    })


@api_bp.route('/time/sync', methods=['POST'])
@handle_errors
def sync_time():
    """手動觸發網路時間同步"""
    clock = get_clock()
    synced = clock.sync()
    return jsonify({"success": True, "synced": synced, "sync": clock.get_sync_status()})


@api_bp.route('/weeks/<int:week>', methods=['GET'])
@handle_errors
def get_week(week):
    """指定週次的日期範圍"""
    week = _parse_week(week, None)
    return jsonify({"success": True, **_week_info(week)})


@api_bp.route('/schedule', methods=['GET'])
@handle_errors
def get_week_schedule():
    """指定週次課表 (預設本週)"""
    now = get_clock().now()
    current_week = get_current_week(now)
    week = _parse_week(request.args.get('week'), current_week)
    schedule = get_schedule()
    view = build_week_view(schedule, week, now)
    return jsonify({
        "success": True,
        "currentWeek": current_week,
        "isCurrentWeek": week == current_week,
        "notes": schedule.notes,
        **view,
    })


@api_bp.route('/courses/<course_id>', methods=['GET'])
@handle_errors
def get_course(course_id):
    """課程詳細資料 + 進度"""
    schedule = get_schedule()
    course = find_course(schedule, course_id)
    if course is None:
        return jsonify({"success": False, "error": "找不到指定的課程。"}), 404

    week = _parse_week(request.args.get('week'), None) or get_current_week()
    slot = schedule.time_slot_map().get(course.periods)
    progress = None
    if slot is not None:
        progress = _progress_summary(calculate_course_progress(course, slot, week))
        progress.pop("course", None)

    return jsonify({
        "success": True,
        "course": course.to_dict(),
        "timeSlot": slot.to_dict() if slot else None,
        "progress": progress,
    })


@api_bp.route('/progress', methods=['GET'])
@handle_errors
def get_progress():
    """學期進度統計"""
    week = _parse_week(request.args.get('week'), None) or get_current_week()
    schedule = get_schedule()
    semester = calculate_semester_progress(schedule, week)

    summary = semester.to_dict()
    summary["status"] = get_progress_status(semester.progress_percentage)
    summary["totalDisplay"] = format_duration(semester.total_minutes)
    summary["completedDisplay"] = format_duration(semester.completed_minutes)
    summary["remainingDisplay"] = format_duration(semester.remaining_minutes)

    return jsonify({
        "success": True,
        "week": week,
        "semester": summary,
        "courses": [_progress_summary(p) for p in get_all_courses_progress(schedule, week)],
    })
