# API Package for caseflow
# Execution, messaging, storage and the FastAPI surface
