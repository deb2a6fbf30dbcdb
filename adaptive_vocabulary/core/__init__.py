"""
adaptive_vocabulary.core

The learning core of the adaptive vocabulary engine.
Contains:
 - the n-gram language model with Kneser-Ney smoothing (NgramModel)
 - the PPMI-based distributional vector space (DistributionalSpace)
 - per-user naive Bayes personalization (PersonalizationClassifier)
 - strategy orchestration, A/B comparison and quality estimation (AdaptiveOrchestrator)
 - a reference UCB bandit for term selection (UCBVocabularyBandit)
"""

from .ngram_model import NgramModel, ContextPrediction
from .distributional_space import DistributionalSpace, RebuildReport
from .personalization import PersonalizationClassifier, Adaptation, UserProfile
from .orchestrator import AdaptiveOrchestrator, SelectionOptions, SelectionResult, FeedbackOutcome
from .ab_testing import ABTestFramework
from .bandit import UCBVocabularyBandit
from .quality import estimate_quality
from .strategies import STRATEGIES, Strategy

__all__ = [
    "NgramModel",
    "ContextPrediction",
    "DistributionalSpace",
    "RebuildReport",
    "PersonalizationClassifier",
    "Adaptation",
    "UserProfile",
    "AdaptiveOrchestrator",
    "SelectionOptions",
    "SelectionResult",
    "FeedbackOutcome",
    "ABTestFramework",
    "UCBVocabularyBandit",
    "estimate_quality",
    "STRATEGIES",
    "Strategy",
]
