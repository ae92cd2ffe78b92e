"""
translations_api — Languages, LanguageTranslators and Translations REST API Lambda.

One generic ResourceHandler, instantiated per resource definition, behind a
single API Gateway proxy entrypoint (handler.lambda_handler).
"""
