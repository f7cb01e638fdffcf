"""On-page SEO scoring."""

from stackserp.seo.scorer import ContentScore, calculate_content_score

__all__ = ["ContentScore", "calculate_content_score"]
