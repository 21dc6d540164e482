# Persistence Package
