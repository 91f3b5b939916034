"""도메인 서비스 및 외부 API 클라이언트"""
