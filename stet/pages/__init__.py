from stet.pages.base import AsyncInit, KeyHelp, NavigationCapture, Page, Title
from stet.pages.history import HistoryPage
from stet.pages.journal import JournalPage
from stet.pages.oura import OuraPage
from stet.pages.planta import PlantaPage
from stet.pages.task_config import TaskConfigPage
from stet.pages.today import TodayPage

__all__ = [
    "AsyncInit",
    "HistoryPage",
    "JournalPage",
    "KeyHelp",
    "NavigationCapture",
    "OuraPage",
    "Page",
    "PlantaPage",
    "TaskConfigPage",
    "Title",
    "TodayPage",
]
