"""
CRM de marketing - motor de segmentacao de audiencia e disparo de campanhas.
"""
