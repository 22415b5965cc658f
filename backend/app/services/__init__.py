# /backend/app/services/__init__.py
from .dify_service import dify_service
from .analyzer import BillAnalyzer, AnalyzerConfig
from .matcher import KeywordMatcher, SimilarityMatcher, build_matcher
from .normalization import normalize_bill
