# app.py
"""
Main application runner for the XAdES Invoice Signing API
"""
from main import app
from api_endpoints import router

# Include the API router
app.include_router(router, prefix="/api", tags=["Signing"])

if __name__ == "__main__":
    import uvicorn

    print("\n" + "="*60)
    print("🚀 Starting XAdES Invoice Signing API Server")
    print("="*60)
    print("\n📡 API will be available at: http://localhost:8000")
    print("📚 API Documentation: http://localhost:8000/docs")
    print("\n💡 Available Endpoints:")
    print("   POST /api/sign         - Sign an invoice XML")
    print("   POST /api/sign-remote  - Fetch credential and invoice, then sign")
    print("   POST /api/verify       - Verify a signed invoice")
    print("   GET  /health           - Health check")
    print("   GET  /                 - API info")
    print("\n" + "="*60 + "\n")

    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
