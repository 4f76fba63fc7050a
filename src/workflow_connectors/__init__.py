"""
Workflow Connectors

Client-side building blocks used by the workflow automation host to talk
to third-party platforms. Each platform lives in its own subpackage.
"""
