"""Keyword-matrix table relevance classification."""

from planqa.classification.classifier import TableRelevanceClassifier, match_keywords

__all__ = ["TableRelevanceClassifier", "match_keywords"]
