"""
TextractCompletion Lambda

Triggered by Textract SNS completion notifications, either directly from
the topic or through an SQS queue subscribed to it.

Trigger: SNS topic (or SQS queue) receiving Textract job notifications
Output: extracted/ and formatted/ artifacts, classification message, job EXTRACTED

Flow:
1. Parse the Textract completion notification
2. Resolve the job by textractJobId
3. Fetch all result pages and store raw and formatted output
4. Enqueue classification and mark the job EXTRACTED
"""

from lambdas.textract_completion.handler import lambda_handler

__all__ = ["lambda_handler"]
