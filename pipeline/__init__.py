"""
Document Ingestion Pipeline

S3 uploads flow through Textract extraction and Bedrock classification,
coordinated by queue messages and a DynamoDB job row per attempt.
"""
