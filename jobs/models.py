from django.db import models


class Job(models.Model):
    """
    Boundary of the job module: only what the parts ledger reads or writes.
    parts_cost / parts_total are recomputed by JobPartService, never edited.
    """

    job_number = models.CharField(max_length=50, unique=True)
    description = models.TextField(blank=True, default="")
    customer_name = models.CharField(max_length=200, blank=True, default="")

    is_callback = models.BooleanField(default=False)
    first_call_complete = models.BooleanField(default=False)

    parts_cost = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    parts_total = models.DecimalField(max_digits=15, decimal_places=2, default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return self.job_number
