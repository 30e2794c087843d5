"""
Question Bank Ingestion Engine
==============================
Turns loosely structured Q&A documents into a normalized catalog of
numbered questions, and tracks per-user favorite/completion state.

Architecture:
    - Document Scanner: Enumerates source documents, yields raw text
    - Block Parser: Tags segments and groups them into question blocks
    - Question Extractor: Renders blocks into title/content/tags/difficulty
    - Category Resolver: Finds or creates categories with numeric ranges
    - Number Allocator: Assigns category-scoped question numbers
    - Catalog Writer: Idempotent upsert of question records
    - Interaction Store: Favorite/progress toggles and progress summaries

Version: 1.0.0
"""

__version__ = "1.0.0"
