"""Static metadata describing ExamHall."""

APP_NAME = "ExamHall"
APP_VERSION = "0.1"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "ExamHall is an online examination service built with FastAPI. "
    "Teachers author exams and question pools, students take timed exams, "
    "and both roles get result dashboards."
)
