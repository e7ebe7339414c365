from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware


def setup_cors(app: FastAPI, origin: str):
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


# Components are built once in create_app and kept on app.state.

def get_db(request: Request):
    return request.app.state.db


def get_auth(request: Request):
    return request.app.state.auth


def get_contacts(request: Request):
    return request.app.state.contacts


def get_messaging(request: Request):
    return request.app.state.messaging
