# Escalation Package
