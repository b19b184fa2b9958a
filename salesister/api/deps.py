"""FastAPI dependencies for the call ingestion API."""

from typing import Annotated

from fastapi import Depends

from salesister.db.call_store import CallStore, get_call_store
from salesister.services.call_processing import CallProcessor, get_call_processor

CallStoreDep = Annotated[CallStore, Depends(get_call_store)]
CallProcessorDep = Annotated[CallProcessor, Depends(get_call_processor)]
