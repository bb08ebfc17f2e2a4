"""
cert_deployer — renewed certificate propagation to cluster ingress secrets.

Reacts to a signed certificate manager notification, verifies it with the
instance's current public key, and on cert_renewed updates the cluster's
ALB secret, confirms the update, and reports the outcome to Slack.

Built on the Railway-Oriented Programming (ROP) framework for
explicit, composable, functional error handling.
"""

__version__ = "0.1.0"
