"""
學期進度計算服務
"""
from config import Config
from models import CourseProgress, SemesterProgress
from services.calendar_service import get_current_week, parse_week_range, time_to_minutes

PROGRESS_BANDS = [
    # (上限, label, color, bgColor) - 百分比小於上限時套用
    (25, '剛剛開始', 'text-blue-600', 'bg-blue-100'),
    (50, '進行中', 'text-indigo-600', 'bg-indigo-100'),
    (75, '過半了', 'text-purple-600', 'bg-purple-100'),
    (100, '即將完成', 'text-orange-600', 'bg-orange-100'),
]


def calculate_duration(start_time, end_time):
    """節次長度 (分鐘), 結束早於開始時為負數"""
    return time_to_minutes(end_time) - time_to_minutes(start_time)


def calculate_effective_weeks(week_type, start_week, end_week):
    """範圍內實際上課的週數"""
    if week_type == 'all':
        return end_week - start_week + 1

    if week_type == 'odd':
        first = start_week if start_week % 2 == 1 else start_week + 1
        last = end_week if end_week % 2 == 1 else end_week - 1
    elif week_type == 'even':
        first = start_week if start_week % 2 == 0 else start_week + 1
        last = end_week if end_week % 2 == 0 else end_week - 1
    else:
        return 0

    if first > last:
        return 0
    return (last - first) // 2 + 1


def calculate_completed_weeks(week_type, start_week, current_week):
    if current_week < start_week:
        return 0
    return calculate_effective_weeks(week_type, start_week, current_week)


def parse_course_week_range(course, default_max_week=None):
    """課程週次範圍, 未設定或格式錯誤時為整個學期"""
    if default_max_week is None:
        default_max_week = Config.SEMESTER_WEEKS
    bounds = parse_week_range(course.week_range)
    if bounds is None:
        return 1, default_max_week
    return bounds


def calculate_course_progress(course, time_slot, current_week, default_max_week=None):
    """單一課程進度"""
    start_week, end_week = parse_course_week_range(course, default_max_week)
    effective_current_week = min(current_week, end_week)

    duration = calculate_duration(time_slot.start_time, time_slot.end_time)

    total_weeks = calculate_effective_weeks(course.week_type, start_week, end_week)
    completed_weeks = calculate_completed_weeks(course.week_type, start_week, effective_current_week)

    total_minutes = duration * total_weeks
    completed_minutes = duration * completed_weeks
    percentage = (completed_minutes / total_minutes) * 100 if total_minutes else 0

    return CourseProgress(
        course=course,
        total_minutes=total_minutes,
        completed_minutes=completed_minutes,
        remaining_minutes=total_minutes - completed_minutes,
        progress_percentage=percentage,
        is_active=start_week <= current_week <= end_week,
        weeks_count=total_weeks,
        completed_weeks=completed_weeks,
    )


def _resolved_progress(schedule, current_week, default_max_week):
    slots = schedule.time_slot_map()
    for course in schedule.courses:
        slot = slots.get(course.periods)
        # 找不到節次的課程不列入統計
        if slot is None:
            continue
        yield calculate_course_progress(course, slot, current_week, default_max_week)


def calculate_semester_progress(schedule, current_week=None, default_max_week=None):
    """整個學期的進度統計"""
    if current_week is None:
        current_week = get_current_week()

    progresses = list(_resolved_progress(schedule, current_week, default_max_week))

    total_minutes = sum(p.total_minutes for p in progresses)
    completed_minutes = sum(p.completed_minutes for p in progresses)
    total_courses = len(progresses)

    week_spans = []
    for p in progresses:
        start, end = parse_course_week_range(p.course, default_max_week)
        week_spans.append(end - start + 1)

    return SemesterProgress(
        total_minutes=total_minutes,
        completed_minutes=completed_minutes,
        remaining_minutes=total_minutes - completed_minutes,
        progress_percentage=(completed_minutes / total_minutes) * 100 if total_minutes else 0,
        total_courses=total_courses,
        completed_courses=sum(1 for p in progresses if p.is_active),
        average_weeks_per_course=sum(week_spans) / total_courses if total_courses else 0,
    )


def get_all_courses_progress(schedule, current_week=None, default_max_week=None):
    """所有課程進度, 依百分比由高到低"""
    if current_week is None:
        current_week = get_current_week()
    progresses = list(_resolved_progress(schedule, current_week, default_max_week))
    return sorted(progresses, key=lambda p: p.progress_percentage, reverse=True)


def format_duration(minutes):
    """分鐘數 → 'H小時M分鐘'"""
    hours = int(minutes // 60)
    mins = int(minutes % 60)

    if hours == 0:
        return f"{mins}分鐘"
    if mins == 0:
        return f"{hours}小時"
    return f"{hours}小時{mins}分鐘"


def get_progress_status(percentage):
    """進度百分比對應的狀態標籤與顏色"""
    if percentage == 0:
        return {"label": '尚未開始', "color": 'text-gray-600', "bgColor": 'bg-gray-100'}
    for upper, label, color, bg_color in PROGRESS_BANDS:
        if percentage < upper:
            return {"label": label, "color": color, "bgColor": bg_color}
    return {"label": '已結束', "color": 'text-green-600', "bgColor": 'bg-green-100'}
