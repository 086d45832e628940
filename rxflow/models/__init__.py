from rxflow.models.client import Client
from rxflow.models.job_metric import JobMetric
from rxflow.models.recipe_line import RecipeLine

__all__ = ["Client", "JobMetric", "RecipeLine"]
