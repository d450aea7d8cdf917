"""
Class Schedule - 資料模型
"""
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from services.calendar_service import time_to_minutes

WEEK_TYPES = ('all', 'odd', 'even')

MAX_CLOCK_OFFSET_MS = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class TimeSlot:
    """作息時間 (節次)"""
    period: str                # "3-4"
    start_time: str            # "10:05"
    end_time: str              # "11:35"

    def duration_minutes(self):
        return time_to_minutes(self.end_time) - time_to_minutes(self.start_time)

    @classmethod
    def from_dict(cls, d):
        slot = cls(
            period=str(d['period']).strip(),
            start_time=str(d['startTime']).strip(),
            end_time=str(d['endTime']).strip(),
        )
        # 不支援跨日節次
        if slot.duration_minutes() <= 0:
            raise ValueError(f"節次 {slot.period} 的結束時間必須晚於開始時間")
        return slot

    def to_dict(self):
        return {
            "period": self.period,
            "startTime": self.start_time,
            "endTime": self.end_time,
        }


@dataclass(frozen=True)
class Course:
    """每週固定的一堂課"""
    id: str
    name: str
    classroom: str
    day_of_week: int           # 1-7, 1=星期一
    periods: str               # TimeSlot.period
    week_type: str = 'all'     # all / odd / even
    week_range: Optional[str] = None   # "1-15"
    student_count: Optional[int] = None
    note: Optional[str] = None
    teacher: Optional[str] = None
    description: Optional[str] = None
    course_code: Optional[str] = None

    @classmethod
    def from_dict(cls, d):
        day = int(d['dayOfWeek'])
        if not 1 <= day <= 7:
            raise ValueError(f"dayOfWeek 必須介於 1~7: {day}")
        week_type = d.get('weekType', 'all')
        if week_type not in WEEK_TYPES:
            raise ValueError(f"未知的 weekType: {week_type!r}")
        student_count = d.get('studentCount')
        return cls(
            id=str(d['id']),
            name=str(d['name']),
            classroom=str(d.get('classroom', '')),
            day_of_week=day,
            periods=str(d['periods']),
            week_type=week_type,
            # 舊資料使用 timePeriod
            week_range=d.get('weekRange') or d.get('timePeriod') or None,
            student_count=int(student_count) if student_count is not None else None,
            note=d.get('note') or None,
            teacher=d.get('teacher') or None,
            description=d.get('description') or None,
            course_code=d.get('courseCode') or None,
        )

    def to_dict(self):
        d = {
            "id": self.id,
            "name": self.name,
            "classroom": self.classroom,
            "dayOfWeek": self.day_of_week,
            "periods": self.periods,
            "weekType": self.week_type,
        }
        optional = {
            "weekRange": self.week_range,
            "studentCount": self.student_count,
            "note": self.note,
            "teacher": self.teacher,
            "description": self.description,
            "courseCode": self.course_code,
        }
        d.update({k: v for k, v in optional.items() if v is not None})
        return d


@dataclass
class ScheduleData:
    """課表資料"""
    time_slots: List[TimeSlot] = field(default_factory=list)
    courses: List[Course] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)

    def time_slot_map(self):
        return {slot.period: slot for slot in self.time_slots}


@dataclass
class ClockState:
    """網路時間同步狀態"""
    is_network_time: bool = False
    last_sync_time: Optional[datetime] = None
    error: Optional[str] = None
    offset: float = 0          # 毫秒, 網路時間 - 本地時間

    def to_dict(self):
        return {
            "isNetworkTime": self.is_network_time,
            "lastSyncTime": self.last_sync_time.isoformat() if self.last_sync_time else None,
            "error": self.error,
            "offset": self.offset,
        }

    @classmethod
    def from_dict(cls, d):
        last_sync = d.get('lastSyncTime')
        offset = d.get('offset', 0)
        if isinstance(offset, bool) or not isinstance(offset, (int, float)):
            raise ValueError(f"offset 格式錯誤: {offset!r}")
        # NaN / inf 或超過一天的偏移視為損壞
        if not math.isfinite(offset) or abs(offset) > MAX_CLOCK_OFFSET_MS:
            raise ValueError(f"offset 超出範圍: {offset!r}")
        is_network_time = d.get('isNetworkTime', False)
        if not isinstance(is_network_time, bool):
            raise ValueError(f"isNetworkTime 格式錯誤: {is_network_time!r}")
        error = d.get('error')
        return cls(
            is_network_time=is_network_time,
            last_sync_time=datetime.fromisoformat(last_sync) if last_sync else None,
            error=str(error) if error is not None else None,
            offset=offset,
        )


@dataclass
class CourseProgress:
    """單一課程進度"""
    course: Course
    total_minutes: int = 0
    completed_minutes: int = 0
    remaining_minutes: int = 0
    progress_percentage: float = 0
    is_active: bool = False
    weeks_count: int = 0
    completed_weeks: int = 0

    def to_dict(self, include_course=True):
        d = {
            "courseId": self.course.id,
            "totalMinutes": self.total_minutes,
            "completedMinutes": self.completed_minutes,
            "remainingMinutes": self.remaining_minutes,
            "progressPercentage": self.progress_percentage,
            "isActive": self.is_active,
            "weeksCount": self.weeks_count,
            "completedWeeks": self.completed_weeks,
        }
        if include_course:
            d["course"] = self.course.to_dict()
        return d


@dataclass
class SemesterProgress:
    """整個學期的進度統計"""
    total_minutes: int = 0
    completed_minutes: int = 0
    remaining_minutes: int = 0
    progress_percentage: float = 0
    total_courses: int = 0
    completed_courses: int = 0
    average_weeks_per_course: float = 0

    def to_dict(self):
        return {
            "totalMinutes": self.total_minutes,
            "completedMinutes": self.completed_minutes,
            "remainingMinutes": self.remaining_minutes,
            "progressPercentage": self.progress_percentage,
            "totalCourses": self.total_courses,
            "completedCourses": self.completed_courses,
            "averageWeeksPerCourse": self.average_weeks_per_course,
        }
