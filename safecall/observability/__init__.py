# Observability Package
