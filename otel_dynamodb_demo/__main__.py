from otel_dynamodb_demo.cli import run

run()
