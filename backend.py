import logging

from certledger.app import create_app

logging.basicConfig(level=logging.INFO)

app = create_app()

# -------------------- Main --------------------
if __name__ == "__main__":
    app.run(host="0.0.0.0", port=app.config["PORT"], debug=False)
