"""Business logic services.

Route handlers call into these modules; they own database writes, page
fetches and model calls. The tag pipeline in tag_pipeline composes the
smaller services (content_fetcher, keyword_extractor, domain_classifier,
ai_tagger, tag_merger, tag_cache, usage).
"""
