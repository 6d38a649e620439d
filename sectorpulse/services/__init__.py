"""SectorPulse services.

- Branching Service: pure visibility rules for survey sections/questions
- Survey Service: survey definitions and atomic submission ingestion
- Analytics Service: aggregation engine, cache store and guarded readers
- Results Service: respondent verification by receipt code
- Admin Service: destructive data reset and cache rebuild
- Audit Service: hash-chained log of administrative actions
- LLM Service: streamed narrative summaries (dashboard and answer recaps)

Every read path that surfaces respondent-derived statistics goes through
the k-anonymity guard in the analytics service.
"""
