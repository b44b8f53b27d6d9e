import os

from adaptive_escrow import create_app

# factory with the config named by FLASK_ENV (default "development")
app = create_app(os.getenv("FLASK_ENV", "development"))

if __name__ == "__main__":
    # bind all interfaces for Docker
    app.run(host="0.0.0.0", port=5000, debug=app.config.get("DEBUG", False))
