from rxflow.db.base_class import Base  # noqa: F401

# Import all the models here so that Base has them registered
# This file should NOT be imported by models.
from rxflow.models.client import Client  # noqa: F401
from rxflow.models.job_metric import JobMetric  # noqa: F401
from rxflow.models.recipe_line import RecipeLine  # noqa: F401
