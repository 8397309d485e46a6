from fastapi import FastAPI, HTTPException

from .config import ExtractorConfig
from .exceptions import ConfigurationError, NothingToSaveError, PDFError, PDFNotFoundError
from .models import ExtractRequest, ExtractResponse
from .service import ExtractionService


def create_app(
    config: ExtractorConfig | None = None,
    service: ExtractionService | None = None,
) -> FastAPI:
    service = service or ExtractionService(config=config)
    app = FastAPI(
        title="Exam Question Extractor",
        version="1.0.0",
        description="Exam question extraction from scanned papers via a vision model.",
    )

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.post("/extract", response_model=ExtractResponse)
    async def extract(request: ExtractRequest) -> ExtractResponse:
        if request.save and (not request.course_id or request.year is None):
            raise HTTPException(status_code=400, detail="course_id and year are required to save questions")

        try:
            result, document_id, output_path = await service.extract_and_save(request.pdf_path)
        except PDFNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except PDFError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except ConfigurationError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except Exception as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc

        saved = 0
        if request.save:
            try:
                saved = len(service.save_questions(result, request.course_id, request.year))
            except NothingToSaveError:
                saved = 0

        return ExtractResponse(
            document_id=document_id,
            output_path=output_path,
            pages=result.total_pages,
            questions=result.total_questions,
            page_errors=result.page_errors,
            saved=saved,
        )

    return app


app = create_app()
