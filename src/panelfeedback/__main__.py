from panelfeedback.cli import app

app()
