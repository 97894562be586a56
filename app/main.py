import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.config import settings
from app.errors import BusinessRuleError, DomainError, ForbiddenError, NotFoundError, ValidationError
from app.logging_config import configure_logging
from app.routers import accounting, approvals, procurement, warehouse
from app.security.principals import install_principal_middleware

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title='Procurement Ledger')

install_principal_middleware(app)

app.include_router(procurement.router)
app.include_router(warehouse.router)
app.include_router(accounting.router)
app.include_router(approvals.router)


@app.exception_handler(ForbiddenError)
async def forbidden_handler(request: Request, exc: ForbiddenError):
    return JSONResponse(status_code=403, content={'message': str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={'message': str(exc)})


@app.exception_handler(BusinessRuleError)
async def business_rule_handler(request: Request, exc: BusinessRuleError):
    logger.info('Business rule violation on %s: %s', request.url.path, exc)
    return JSONResponse(status_code=422, content={'message': str(exc), 'errors': exc.errors})


@app.exception_handler(ValidationError)
async def validation_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={'message': str(exc), 'errors': exc.errors})


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    return JSONResponse(status_code=400, content={'message': str(exc)})


@app.get('/health')
def health() -> dict:
    return {'status': 'ok'}
