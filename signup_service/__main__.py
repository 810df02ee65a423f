import os

if __name__ == "__main__":
    # Valeurs par défaut alignées sur config.get_settings()
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "3000"))
    log_level = os.getenv("LOG_LEVEL", "INFO").lower()
    import uvicorn

    uvicorn.run("signup_service.main:app", host=host, port=port, log_level=log_level, reload=False)
