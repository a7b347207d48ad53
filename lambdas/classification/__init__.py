"""
Classification Lambda

Consumes the classification queue: classifies formatted extraction output
with Bedrock and finishes the job.

Trigger: SQS classification queue (batch of up to 10)
Output: classified/{documentId}.json, job SUCCEEDED

Flow:
1. Parse classification message
2. Verify the formatted document exists
3. Resolve knowledge base context, invoke the model, validate the answer
4. Store the result and mark the job SUCCEEDED
"""

from lambdas.classification.handler import lambda_handler

__all__ = ["lambda_handler"]
