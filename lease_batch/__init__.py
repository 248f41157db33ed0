"""
lease_batch -- typed invoice jobs and their dispatcher.

Replaces a string-keyed queue switch with a closed set of frozen job
variants (``GenerateMonthlyJob``, ``GenerateSingleJob``) validated by
``parse_job`` and executed by ``InvoiceJobDispatcher``.
"""

from lease_batch.dispatcher import InvoiceJobDispatcher
from lease_batch.jobs import (
    GENERATE_MONTHLY,
    GENERATE_SINGLE,
    SYSTEM_ACTOR_ID,
    GenerateMonthlyJob,
    GenerateSingleJob,
    InvoiceJob,
    parse_job,
)

__all__ = [
    "GENERATE_MONTHLY",
    "GENERATE_SINGLE",
    "SYSTEM_ACTOR_ID",
    "GenerateMonthlyJob",
    "GenerateSingleJob",
    "InvoiceJob",
    "InvoiceJobDispatcher",
    "parse_job",
]
