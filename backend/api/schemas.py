from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict


class _Body(BaseModel):
    model_config = ConfigDict(extra="ignore")

# --- Gateway requests ---

class EntryIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    text: str = ""
    type: Optional[str] = None
    timestamp: Optional[Union[int, float]] = None

class DiaryAnalysisIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    diary: Optional[str] = None
    keyPoints: Optional[str] = None
    insights: Optional[str] = None

class FolderIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    date: str = ""
    entries: List[EntryIn] = []
    diaryAnalysis: Optional[DiaryAnalysisIn] = None

class DailyAnalysisRequest(_Body):
    apiKey: Optional[str] = None
    entries: Optional[List[EntryIn]] = None

class DiaryRequest(_Body):
    apiKey: Optional[str] = None
    entries: Optional[List[EntryIn]] = None
    customPrompt: Optional[str] = None

class CounselorDiaryRequest(_Body):
    apiKey: Optional[str] = None
    folders: Optional[List[FolderIn]] = None

class LongTermRequest(_Body):
    apiKey: Optional[str] = None
    range: Optional[Dict[str, Any]] = None
    folders: Optional[List[FolderIn]] = None
    enrichment: Optional[Dict[str, Any]] = None
    skillTree: Optional[Dict[str, Any]] = None

class GoalSplitRequest(_Body):
    apiKey: Optional[str] = None
    title: Optional[str] = None

class FortuneRequest(_Body):
    apiKey: Optional[str] = None
    category: Optional[str] = None

# --- Account / storage requests ---

class CodeRequest(_Body):
    code: Optional[str] = None

class EmotionDayRequest(_Body):
    date: Optional[str] = None
    entries: Optional[Any] = None
    analysis: Optional[str] = None
