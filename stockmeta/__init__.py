"""Stock marketplace metadata generation with Gemini."""

from stockmeta.config import CONFIG, Settings
from stockmeta.controller import RunController
from stockmeta.models import ResultRecord, WorkItem

__all__ = ["CONFIG", "Settings", "RunController", "ResultRecord", "WorkItem"]
