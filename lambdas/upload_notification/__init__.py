"""
UploadNotification Lambda

Turns S3 object-created notifications into ingest queue messages.

Trigger: S3 event notification (ObjectCreated)
Output: One ingest message per uploaded object
"""

from lambdas.upload_notification.handler import lambda_handler

__all__ = ["lambda_handler"]
