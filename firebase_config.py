import firebase_admin
from firebase_admin import credentials, firestore, auth, storage
import os
import json

_app = None


def init_firebase(credentials_json=None, credentials_file='serviceAccountKey.json', storage_bucket=None):
    """Initialize the default Firebase app once; later calls return it"""
    global _app
    if _app is not None:
        return _app
    # Try to load from file first, then from environment variable
    if credentials_file and os.path.exists(credentials_file):
        cred = credentials.Certificate(credentials_file)
    else:
        firebase_creds = credentials_json or os.environ.get('FIREBASE_CREDENTIALS')
        if firebase_creds:
            cred = credentials.Certificate(json.loads(firebase_creds))
        else:
            raise FileNotFoundError("Firebase credentials not found!")
    options = {'storageBucket': storage_bucket} if storage_bucket else None
    _app = firebase_admin.initialize_app(cred, options)
    return _app


def get_db():
    return firestore.client(app=init_firebase())


def get_bucket():
    app = init_firebase()
    if not app.options.get('storageBucket'):
        return None
    return storage.bucket(app=app)


def verify_id_token(id_token):
    """Decoded claims of a Firebase Auth ID token (raises on invalid/expired tokens)"""
    return auth.verify_id_token(id_token, app=init_firebase())
