from src.models.analysis import (
    AnalysisMetrics,
    AnalysisResults,
    FakeReviewAnalysis,
    ReviewCitation,
    SentimentAnalysis,
    TransparencyReport,
    Verdict,
)
from src.models.collection import (
    CollectionResult,
    DeduplicationResult,
    MergeResult,
    PaginationAttempt,
    PaginationResult,
    SampledReviews,
    SortNavigationResult,
)
from src.models.detection import InterfaceDetectionResult, LanguageDetectionResult, SelectorSet
from src.models.review import Review
from src.models.session import AnalysisProgress, AnalysisSession, CollectionSession, SessionError

__all__ = [
    "Review",
    "SelectorSet",
    "LanguageDetectionResult",
    "InterfaceDetectionResult",
    "SortNavigationResult",
    "PaginationAttempt",
    "PaginationResult",
    "DeduplicationResult",
    "MergeResult",
    "SampledReviews",
    "CollectionResult",
    "SentimentAnalysis",
    "FakeReviewAnalysis",
    "Verdict",
    "AnalysisMetrics",
    "ReviewCitation",
    "TransparencyReport",
    "AnalysisResults",
    "AnalysisProgress",
    "AnalysisSession",
    "CollectionSession",
    "SessionError",
]
